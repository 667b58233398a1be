from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from src.cardexpenses.models import EXPENSE_CATEGORIES


class BrandingConfig(BaseModel):
    brand_name: str = "Nota Spese"
    band_color: tuple[int, int, int] = (255, 122, 26)
    logo_path: Optional[str] = None  # PNG/JPEG drawn in the header band when present

    @field_validator("band_color")
    @classmethod
    def _rgb_range(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        if any(c < 0 or c > 255 for c in v):
            raise ValueError("band_color components must be 0..255")
        return v


class ExpensesConfig(BaseModel):
    database_url: Optional[str] = None  # defaults to DATABASE_URL / data/cardexpenses.db
    cache_dir: str = "data/cache"
    exports_dir: str = "data/exports"
    ui_timezone: Optional[str] = None  # defaults to UI_TIMEZONE / Europe/Rome
    categories: list[str] = Field(default_factory=lambda: list(EXPENSE_CATEGORIES))
    branding: BrandingConfig = Field(default_factory=BrandingConfig)

    @field_validator("categories")
    @classmethod
    def _clean_categories(cls, v: list[str]) -> list[str]:
        out: list[str] = []
        for c in v:
            name = " ".join((c or "").strip().split())
            if name and name not in out:
                out.append(name)
        return out


def _candidate_paths() -> list[Path]:
    paths = [Path("expenses.yaml")]
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".cardexpenses" / "expenses.yaml")
    return paths


def load_expenses_config(path: Optional[Path] = None) -> tuple[ExpensesConfig, Optional[str]]:
    candidates = [path] if path else _candidate_paths()
    for p in candidates:
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return ExpensesConfig.model_validate(data.get("expenses") or data), str(p)
    return ExpensesConfig(), None
