"""
HTML report generator for MediAnalyst.

Creates a standalone, downloadable HTML document from a completed
analysis. The document carries its own Markdown and Mermaid rendering
bootstrap, so it renders without the application.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Template

from medianalyst.config import settings
from medianalyst.models.schemas import (
    ProductInfo,
    IngredientAnalysis,
    DiagramAnalysis,
    MedicalAnalysis,
)
from medianalyst.utils.logger import get_logger

logger = get_logger("report_generator")

# (field, heading template) in the order they appear in the report
INGREDIENT_SECTIONS = (
    ("tcm_table", "### 中医解读\n{}"),
    ("tcm_relations", "**君臣佐使**: {}"),
    ("tcm_synergy", "**组方功效**: {}"),
    ("western_table", "### 西医/现代药理\n{}"),
    ("combined_synergy", "### 中西协同\n{}"),
)


def compose_ingredient_markdown(analysis: IngredientAnalysis) -> str:
    """Join the non-empty ingredient sections in their fixed order."""
    parts = []
    for field, template in INGREDIENT_SECTIONS:
        value = getattr(analysis, field)
        if value:
            parts.append(template.format(value))
    return "\n\n".join(parts)


def _label(value) -> str:
    return getattr(value, "value", value)


def report_filename(product: ProductInfo) -> str:
    """File name offered for download."""
    name = f"{product.brand_name}_{product.product_name}_解读报告.html"
    return name.replace("/", "_").replace("\\", "_")


class ReportGenerator:
    """
    Generates standalone HTML reports.

    Every report includes:
    - Product attribute summary
    - Ingredient analysis
    - Pathology explanation and diagram
    - Pharmacology explanation and diagram
    """

    REPORT_CSS = """
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif; line-height: 1.6; color: #333; max-width: 900px; margin: 0 auto; padding: 40px 20px; background-color: #f8fafc; }
    .container { background: white; padding: 40px; border-radius: 12px; box-shadow: 0 4px 6px -1px rgba(0, 0, 0, 0.1); }
    h1 { border-bottom: 2px solid #0ea5e9; padding-bottom: 16px; color: #0f172a; margin-bottom: 24px; text-align: center; }
    h2 { color: #0369a1; margin-top: 40px; border-left: 5px solid #0ea5e9; padding-left: 12px; font-size: 1.5rem; }
    h3 { color: #0284c7; margin-top: 24px; font-size: 1.25rem; border-bottom: 1px solid #e2e8f0; padding-bottom: 8px; }
    p { margin-bottom: 16px; text-align: justify; }
    table { border-collapse: collapse; width: 100%; margin: 20px 0; font-size: 0.95rem; }
    th, td { border: 1px solid #e2e8f0; padding: 10px; text-align: left; vertical-align: top; }
    th { background-color: #f1f5f9; font-weight: 600; color: #475569; }
    tr:nth-child(even) { background-color: #f8fafc; }
    .mermaid { text-align: center; margin: 30px 0; padding: 20px; background: #fff; border: 1px solid #e2e8f0; border-radius: 8px; overflow-x: auto; }
    .info-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(300px, 1fr)); gap: 16px; background: #f0f9ff; padding: 20px; border-radius: 8px; border: 1px solid #bae6fd; margin-bottom: 24px; }
    .info-item strong { color: #0284c7; display: inline-block; margin-right: 8px; }
    .timestamp { color: #64748b; font-size: 0.875rem; margin-bottom: 40px; text-align: center; }
    .hidden-md { display: none; }
    .sources { font-size: 0.875rem; color: #475569; }
    .notice { margin-top: 40px; padding: 16px; background: #fff7ed; border: 1px solid #fed7aa; border-radius: 8px; font-size: 0.875rem; }
    blockquote { border-left: 4px solid #bae6fd; margin: 16px 0; padding: 8px 16px; background-color: #f0f9ff; color: #334155; }
    @media print {
        body { background: white; padding: 0; }
        .container { box-shadow: none; padding: 0; }
    }
    """

    def __init__(self, output_dir: Optional[Path] = None):
        self._output_dir = output_dir
        self.template = Template(self._get_html_template(), autoescape=True)

    @property
    def output_dir(self) -> Path:
        if self._output_dir is None:
            return settings.output_path
        self._output_dir.mkdir(parents=True, exist_ok=True)
        return self._output_dir

    def _get_html_template(self) -> str:
        """Get the HTML template for reports."""
        return """<!DOCTYPE html>
<html lang="zh-CN">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{{ brand_name }} {{ product_name }} - 深度解读报告</title>
<script src="{{ marked_script_url }}"></script>
<script src="{{ mermaid_script_url }}"></script>
<style>{{ css | safe }}</style>
</head>
<body>
<div class="container">
  <h1>{{ brand_name }} {{ product_name }} - 深度解读报告</h1>
  <p class="timestamp">生成时间: {{ generated_date }} | 生成工具: {{ app_name }} v{{ version }}</p>

  <h2>1. 产品基本信息</h2>
  <div class="info-grid">
    {% for label, value in attributes %}
    <div class="info-item"><strong>{{ label }}:</strong> {{ value }}</div>
    {% endfor %}
  </div>
  <p><strong>功能主治:</strong> {{ indications }}</p>
  <p><strong>成分:</strong> {{ ingredients }}</p>
  {% if sources %}
  <div class="sources">
    <strong>参考来源:</strong>
    <ol>
      {% for source in sources %}
      <li><a href="{{ source.uri }}" target="_blank" rel="noopener">{{ source.title }}</a></li>
      {% endfor %}
    </ol>
  </div>
  {% endif %}

  <h2>2. 成分深度解读</h2>
  <div id="render-ingredients"></div>
  <textarea id="md-ingredients" class="hidden-md">{{ ingredient_markdown }}</textarea>

  <h2>3. 病理过程解读</h2>
  <div id="render-pathology"></div>
  <textarea id="md-pathology" class="hidden-md">{{ pathology_explanation }}</textarea>

  <h3>病理流程图</h3>
  <div class="mermaid">
{{ pathology_diagram }}
  </div>

  <h2>4. 药理作用机制</h2>
  <div id="render-pharmacology"></div>
  <textarea id="md-pharmacology" class="hidden-md">{{ pharmacology_explanation }}</textarea>

  <h3>药理流程图</h3>
  <div class="mermaid">
{{ pharmacology_diagram }}
  </div>

  <div class="notice">本报告由 AI 自动生成，仅供健康科普参考，不能替代医生的诊断与用药指导。</div>
</div>

<script>
  mermaid.initialize({ startOnLoad: true, theme: 'default' });

  function renderMd(idSrc, idDest) {
    const raw = document.getElementById(idSrc).value;
    document.getElementById(idDest).innerHTML = marked.parse(raw);
  }

  window.onload = function() {
    renderMd('md-ingredients', 'render-ingredients');
    renderMd('md-pathology', 'render-pathology');
    renderMd('md-pharmacology', 'render-pharmacology');
  };
</script>
</body>
</html>
"""

    def _prepare_template_data(
        self,
        product: ProductInfo,
        ingredients: IngredientAnalysis,
        pathology: DiagramAnalysis,
        pharmacology: DiagramAnalysis,
        generated_at: datetime,
    ) -> dict:
        """Prepare data for template rendering."""
        return {
            "css": self.REPORT_CSS,
            "marked_script_url": settings.marked_script_url,
            "mermaid_script_url": settings.mermaid_script_url,
            "app_name": settings.app_name,
            "version": settings.app_version,
            "generated_date": generated_at.strftime("%Y-%m-%d %H:%M:%S"),
            "brand_name": product.brand_name,
            "product_name": product.product_name,
            "attributes": [
                ("品牌", product.brand_name),
                ("名称", product.product_name),
                ("分类", _label(product.classification)),
                ("属性", _label(product.attribute)),
                ("药品分类", product.drug_category),
                ("医保类别", _label(product.insurance_category)),
                ("来源", product.origin),
            ],
            "indications": product.indications,
            "ingredients": product.ingredients,
            "sources": product.sources,
            "ingredient_markdown": compose_ingredient_markdown(ingredients),
            "pathology_explanation": pathology.explanation,
            "pathology_diagram": pathology.mermaid_code,
            "pharmacology_explanation": pharmacology.explanation,
            "pharmacology_diagram": pharmacology.mermaid_code,
        }

    def generate_html(
        self,
        product: ProductInfo,
        ingredients: IngredientAnalysis,
        pathology: DiagramAnalysis,
        pharmacology: DiagramAnalysis,
        generated_at: Optional[datetime] = None,
    ) -> str:
        """
        Render the report document.

        Args:
            product: Reviewed product facts
            ingredients: Ingredient analysis
            pathology: Pathology explanation and diagram
            pharmacology: Pharmacology explanation and diagram
            generated_at: Timestamp printed in the header (defaults to now)

        Returns:
            HTML string
        """
        data = self._prepare_template_data(
            product, ingredients, pathology, pharmacology, generated_at or datetime.now()
        )
        return self.template.render(**data)

    def generate_for_record(self, record: MedicalAnalysis) -> str:
        """Render the report of a saved analysis."""
        return self.generate_html(
            record.product,
            record.ingredient_analysis,
            record.pathology,
            record.pharmacology,
            generated_at=datetime.fromtimestamp(record.timestamp / 1000),
        )

    def save_html(self, html_content: str, product: ProductInfo) -> Path:
        """
        Write a rendered report into the output directory.

        Returns:
            Path to the written file
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = self.output_dir / f"{timestamp}_{report_filename(product)}"
        output_path.write_text(html_content, encoding="utf-8")

        logger.info("HTML report written", path=str(output_path))
        return output_path


# Lazy-loaded singleton
_report_generator: Optional[ReportGenerator] = None


def get_report_generator() -> ReportGenerator:
    """Get or create report generator singleton."""
    global _report_generator
    if _report_generator is None:
        _report_generator = ReportGenerator()
    return _report_generator
