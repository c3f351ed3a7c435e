"""
MediAnalyst AI - Medicine Explainer Wizard

Turns a brand and product name into an AI-generated explainer report
(ingredient pharmacology, pathology diagram, drug-mechanism diagram)
and a follow-up chat grounded in that report.

IMPORTANT: Generated content is informational only. It is NOT medical
advice and must never replace a doctor or pharmacist.
"""

__version__ = "1.0.0"
__author__ = "MediAnalyst AI Team"
