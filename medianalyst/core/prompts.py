"""
Prompt construction for MediAnalyst.

Pure functions mapping domain inputs to instructions for the
generative model. The pathology prompt only ever receives the
indications text so the disease is explained before, and independently
of, the treatment.
"""

import json
from enum import Enum
from typing import Optional, Union

from medianalyst.config import settings
from medianalyst.models.schemas import (
    ProductInfo,
    IngredientAnalysis,
    DiagramAnalysis,
)


def _label(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else value


def build_search_prompt(brand: str, product: str) -> str:
    """Instruction for the grounded product lookup."""
    return f"""请联网检索以下产品的说明书、国家医保药品目录(NRDL)以及药品监管部门公开数据：
品牌：「{brand}」
产品名：「{product}」

需要完成：
1. 依据说明书给出准确的【成分】与【功能主治】。
2. 判断药品分类，只能是：中成药 / 化学药 / 生物药 / 中西结合。
3. 判断药品属性，只能是：处方药 / OTC甲类 / OTC乙类 / 处方药/OTC双跨 / 保健品。
4. 给出详细的药品分类路径或治疗领域，例如“内科用药 > 祛暑剂 > 解表祛暑剂”。
5. 严格核查医保报销类别：
   - 检索 "{product} 国家医保目录" 的最新版本。
   - 只有该产品明确收录于目录时，才输出“甲类”或“乙类”。
   - 查不到明确等级、属于自费药或保健品、或资料相互矛盾时，一律输出“无”，不得依据同类药品推测。
6. 给出产品来源（经典组方出处或原研企业）。

只返回一个 JSON 对象，不要附加任何说明文字：
{{
  "brandName": "{brand}",
  "productName": "{product}",
  "ingredients": "...",
  "indications": "...",
  "classification": "...",
  "attribute": "...",
  "drugCategory": "...",
  "insuranceCategory": "甲类 | 乙类 | 无",
  "origin": "..."
}}"""


def build_ingredient_prompt(product: ProductInfo) -> str:
    """Instruction for the ingredient analysis."""
    return f"""请对以下产品做成分深度解读。
产品名称：{product.product_name}
成分：{product.ingredients}
分类：{_label(product.classification)}

要求：
1. 现代药理解读（所有产品必须提供）：
   - 化学药：说明化学成分与分子作用机制。
   - 中成药或中西结合产品：说明主要药材所含的现代药理活性成分（如生物碱、黄酮类）及其分子靶点与药理作用。
   - 以 Markdown 表格输出，表头为：|名称/药材|核心化学成分|药理靶点|功效作用|临床应用|
2. 中医解读（仅中成药或中西结合产品）：
   - 以 Markdown 表格输出，表头为：|名称|类别|性味|归经|功效|临床应用|
   - 分析组方的君臣佐使。
   - 说明组方整体功效与适应症。
3. 复方或中西结合产品：额外说明各成分之间的协同作用。

不适用的字段请省略。只返回 JSON：
{{
  "tcmTable": "中医 Markdown 表格",
  "tcmRelations": "君臣佐使分析",
  "tcmSynergy": "组方功效",
  "westernTable": "现代药理 Markdown 表格",
  "combinedSynergy": "协同作用分析"
}}"""


def build_pathology_prompt(indications: str) -> str:
    """
    Instruction for the drug-agnostic pathology analysis.

    Only the indications text is embedded; product identity and
    ingredients are not parameters of this function.
    """
    return f"""你是一位资深病理学家。请只依据下面的【功能主治】描述，做纯粹的病理学分析。

分析中不得出现任何药物、品牌或成分名称，只讨论病症本身。

功能主治：{indications}

要求：
1. 拆解病机：说明所涉及疾病或症状的发生与发展过程。
2. 梳理因果：
   - 区分“本”（根本病因）与“标”（外在症状）。
   - 建立 外因或内因 -> 病机变化 -> 组织器官受损 -> 临床表现 的完整链条。
3. 文字解读：
   - 使用 Markdown。
   - 关键病理节点与医学术语加粗。
   - 分条阐述病理机制。
4. 流程图（Mermaid）：
   - 使用 `graph TD`。
   - 节点只写生理或病理名称（如“外感风寒”“肺气失宣”），不得出现“治疗”“药物”等字样。
   - 涉及多个系统时，用 `subgraph` 分别框出。

只返回 JSON：
{{
  "explanation": "Markdown 病理解读",
  "mermaidCode": "graph TD ..."
}}"""


def serialize_ingredient_context(ingredients: IngredientAnalysis, limit: int) -> str:
    """
    Serialize the ingredient analysis for embedding in a prompt.

    The text is cut at ``limit`` characters, which may end mid-field.
    """
    payload = ingredients.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(payload, ensure_ascii=False)[:limit]


def build_pharmacology_prompt(
    pathology: DiagramAnalysis,
    ingredients: IngredientAnalysis,
    product: ProductInfo,
    context_limit: Optional[int] = None,
) -> str:
    """Instruction mapping the product's ingredients onto the pathology diagram."""
    limit = context_limit if context_limit is not None else settings.ingredient_context_limit
    context = serialize_ingredient_context(ingredients, limit)
    return f"""你是一位资深药理学家。请把【产品成分】映射到已建立的【病理模型】上。

产品名称：{product.product_name}
病理流程图源码：
{pathology.mermaid_code}

成分分析数据：
{context}

要求：
1. 药理映射：
   - 找出病理图中的关键干预节点。
   - 说明产品中的具体成分（或中药组方）如何作用于这些节点。
2. 文字解读：
   - 使用 Markdown。
   - 重点说明成分与病理环节的对应关系，格式如“**某成分** 通过 **某作用** 干预 **某病理环节**”。
3. 重绘流程图（Mermaid）：
   - 保留原有病理节点，使用默认样式。
   - 以六边形节点 `{{{{成分}}}}` 插入药物或成分，并设置 `style <节点> fill:#f9f,stroke:#333`。
   - 连线标注作用方式，如 `--抑制-->`、`--促进-->`。

只返回 JSON：
{{
  "explanation": "Markdown 药理机制解读",
  "mermaidCode": "graph TD ..."
}}"""


def build_chat_instruction(
    product: ProductInfo,
    ingredients: IngredientAnalysis,
    pathology_code: str,
    pharmacology_code: str,
) -> str:
    """System instruction grounding the follow-up chat in the finished report."""
    ingredient_json = json.dumps(
        ingredients.model_dump(by_alias=True, exclude_none=True),
        ensure_ascii=False,
    )
    return f"""你是一位医药健康专家。请基于以下产品分析报告回答用户的问题：

产品：{product.brand_name} {product.product_name}
成分分析：{ingredient_json}
病理图：{pathology_code}
药理图：{pharmacology_code}"""


def build_greeting(product: ProductInfo) -> str:
    """First model message shown when the chat opens."""
    return f"我已经完成了对 **{product.product_name}** 的全维解读，您可以问我任何相关问题。"
