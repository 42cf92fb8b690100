"""Ingestion helpers."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field

import yaml

CATEGORIES_PATH = pathlib.Path(__file__).with_name("categories.yml")


@dataclass(slots=True)
class CategoryKeywords:
    name: str
    keywords: list[str]
    popular: list[str] = field(default_factory=list)
    daily: bool = False


def load_categories(path: pathlib.Path = CATEGORIES_PATH) -> dict[str, CategoryKeywords]:
    data = yaml.safe_load(path.read_text()) or []
    categories = [CategoryKeywords(**item) for item in data]
    return {category.name: category for category in categories}


def daily_categories(path: pathlib.Path = CATEGORIES_PATH) -> list[str]:
    return [name for name, category in load_categories(path).items() if category.daily]
