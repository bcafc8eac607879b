"""Rule source language: tokenizer, parser and syntax trees."""

from .declarations import FormulaDecl, FormulaKind, SpecDocument, TransitionDecl, WorkflowDecl
from .parser import parse, parse_formula

__all__ = [
    "FormulaDecl",
    "FormulaKind",
    "SpecDocument",
    "TransitionDecl",
    "WorkflowDecl",
    "parse",
    "parse_formula",
]
