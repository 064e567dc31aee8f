"""
Keyword tables and tunable thresholds for the ingestion engine.

Everything that decides what header text *means* lives here as data, so the
engine can be pointed at another language or ERP by shipping a JSON override
instead of editing extraction code.

Override file layout (every key optional):

    {
      "thresholds": {"ground_truth_floor": 500000, ...},
      "summary_sheet_keywords": ["RESUMO", "SUMMARY"],
      "profiles": {
        "budget": {
          "rules": [{"role": "code", "contains": ["CODIGO"], "exact": ["ID"]}],
          "required_all": ["description"],
          "required_any": ["total", "code", "unit_price"]
        }
      }
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from budget_ingest.shared import fold

CONFIG_ENV_VAR = "BUDGET_INGEST_CONFIG"
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}
MATCH_MODES = ("contains", "exact", "all")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class KeywordMatcher:
    mode: str
    terms: tuple[str, ...]

    def __post_init__(self) -> None:
        if self.mode not in MATCH_MODES:
            raise ConfigError(f"Unknown match mode '{self.mode}'. Expected one of: {', '.join(MATCH_MODES)}")
        object.__setattr__(self, "terms", tuple(fold(term) for term in self.terms))

    def matches(self, text: str) -> bool:
        if self.mode == "exact":
            return text in self.terms
        if self.mode == "all":
            return all(term in text for term in self.terms)
        return any(term in text for term in self.terms)


@dataclass(frozen=True)
class RoleRule:
    role: str
    matchers: tuple[KeywordMatcher, ...]
    excludes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "excludes", tuple(fold(term) for term in self.excludes))

    def matches(self, text: str) -> bool:
        if any(term in text for term in self.excludes):
            return False
        return any(matcher.matches(text) for matcher in self.matchers)


@dataclass(frozen=True)
class SheetProfile:
    name: str
    rules: tuple[RoleRule, ...]
    required_all: tuple[str, ...]
    required_any: tuple[str, ...] = ()
    header_scan_rows: int = 50
    min_rows: int = 2


@dataclass(frozen=True)
class Thresholds:
    noise_threshold: float = 100.0
    ground_truth_floor: float = 1_000_000.0
    # Open question: neither ratio has a documented derivation; keep them tunable.
    group_payable_ratio: float = 0.10
    divergence_tolerance: float = 0.01
    currency_precision: int = 2
    ground_truth_min_rows: int = 5
    probe_rows: tuple[int, ...] = (19, 54, 18, 20, 21)
    probe_cols: tuple[int, ...] = (7, 5, 6, 8)
    realized_probe_rows: tuple[int, ...] = tuple(range(50, 60))
    realized_probe_cols: tuple[int, ...] = (4, 5, 6, 7)
    tag_fallback_column: int = 7
    tag_fallback_max_length: int = 10
    prefer_detailed_sources: bool = True


def _rule(
    role: str,
    *,
    contains: tuple[str, ...] = (),
    exact: tuple[str, ...] = (),
    all_of: tuple[tuple[str, ...], ...] = (),
    excludes: tuple[str, ...] = (),
) -> RoleRule:
    matchers: list[KeywordMatcher] = []
    if contains:
        matchers.append(KeywordMatcher("contains", contains))
    if exact:
        matchers.append(KeywordMatcher("exact", exact))
    for group in all_of:
        matchers.append(KeywordMatcher("all", group))
    return RoleRule(role=role, matchers=tuple(matchers), excludes=excludes)


# Rule order matters: a header cell takes the first role whose rule matches.
BUDGET_PROFILE = SheetProfile(
    name="budget",
    rules=(
        _rule("code", contains=("CODIGO", "CODE"), exact=("ITEM", "ID", "COD", "COD.")),
        _rule(
            "description",
            contains=("NOME", "DESCRICAO", "DESCRIPTION", "DISCRIMINACAO"),
            exact=("ATIVIDADE", "SERVICO", "ACTIVITY", "SERVICE", "NAME"),
        ),
        _rule("unit", contains=("UNIDADE",), exact=("UN", "UND", "UNIT", "UOM")),
        _rule("quantity", contains=("QUANTIDADE", "QUANTITY"), exact=("QTD", "QUANT", "QTDE", "QTY")),
        _rule("unit_price", contains=("UNIT",)),
        _rule(
            "total",
            contains=("TOTAL", "VALOR", "CUSTO", "PRECO", "AMOUNT", "VALUE", "COST", "PRICE"),
            excludes=("UNIT",),
        ),
    ),
    required_all=("description",),
    required_any=("total", "code", "unit_price"),
    header_scan_rows=50,
    min_rows=2,
)

TRANSACTION_PROFILE = SheetProfile(
    name="transactions",
    rules=(
        _rule(
            "budget_code",
            all_of=(("COD", "ORCAMENTO"), ("COD", "TAREFA"), ("CODE", "BUDGET"), ("CODE", "TASK")),
        ),
        _rule("description", contains=("HISTORICO", "DESCRICAO", "DESCRIPTION", "MEMO")),
        _rule("document_number", contains=("DOC", "NOTA", "INVOICE")),
        _rule("value", contains=("VALOR", "TOTAL", "BRUTO", "LIQUIDO", "AMOUNT", "VALUE", "GROSS", "NET")),
        _rule("date", contains=("DATA", "DATE"), exact=("DT", "EMISSAO")),
        _rule("group_name", contains=("GRUPO", "GROUP"), excludes=("COD",)),
        _rule("tag_exact", exact=("SIGLA", "TAG")),
        _rule("tag_loose", contains=("SIGLA", "TIPO", "CLASSE", "CATEGORIA", "CATEGORY", "TYPE", "CLASS")),
    ),
    required_all=("value",),
    required_any=("description", "date"),
    header_scan_rows=50,
    min_rows=5,
)


@dataclass(frozen=True)
class IngestConfig:
    budget_profile: SheetProfile = BUDGET_PROFILE
    transaction_profile: SheetProfile = TRANSACTION_PROFILE
    summary_sheet_keywords: tuple[str, ...] = ("RESUMO", "VIABILIDADE", "SUMMARY", "VIABILITY")
    skip_code_keywords: tuple[str, ...] = ("TOTAL", "RESUMO", "SUMMARY")
    non_construction_keywords: tuple[str, ...] = (
        "ADMINISTRACAO", "INDIRETAS", "DESPESAS", "PROJETOS", "LICENCAS", "MARKETING", "COMERCIAL",
        "ADMINISTRATION", "INDIRECT", "OVERHEAD", "LICENSES", "COMMERCIAL",
    )
    ground_truth_sheet_keywords: tuple[str, ...] = (
        "VIABILIDADE", "RESUMO", "ORCAMENTO", "CUSTO", "VIABILITY", "SUMMARY", "BUDGET", "COST",
    )
    total_row_keywords: tuple[str, ...] = ("TOTAL",)
    total_row_reinforcers: tuple[str, ...] = (
        "GERAL", "ORCAMENTO", "CUSTO", "OBRA", "GENERAL", "BUDGET", "COST", "WORK",
    )
    realized_sheet_keywords: tuple[str, ...] = ("RESUMO", "REALIZADO", "CUSTO", "SUMMARY", "REALIZED", "COST")
    indirect_tags_exact: tuple[str, ...] = ("DI", "D.I")
    indirect_tags_contains: tuple[str, ...] = ("INDIR", "ADM")
    thresholds: Thresholds = field(default_factory=Thresholds)


DEFAULT_CONFIG = IngestConfig()

KEYWORD_FIELDS = tuple(
    f.name for f in fields(IngestConfig) if f.name not in {"budget_profile", "transaction_profile", "thresholds"}
)
PROFILE_FIELDS = {"budget": "budget_profile", "transactions": "transaction_profile"}


def _string_tuple(value: Any, key: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of strings.")
    return tuple(fold(item) for item in value)


def _rule_from_dict(payload: dict[str, Any]) -> RoleRule:
    role = payload.get("role")
    if not isinstance(role, str) or not role:
        raise ConfigError("Every rule needs a non-empty 'role'.")
    all_groups = payload.get("all", [])
    if not isinstance(all_groups, list):
        raise ConfigError(f"Rule '{role}': 'all' must be a list of string lists.")
    return _rule(
        role,
        contains=_string_tuple(payload.get("contains", []), f"{role}.contains"),
        exact=_string_tuple(payload.get("exact", []), f"{role}.exact"),
        all_of=tuple(_string_tuple(group, f"{role}.all") for group in all_groups),
        excludes=_string_tuple(payload.get("excludes", []), f"{role}.excludes"),
    )


def _profile_from_dict(base: SheetProfile, payload: dict[str, Any]) -> SheetProfile:
    if not isinstance(payload, dict):
        raise ConfigError(f"Profile '{base.name}' must be a JSON object.")
    unknown = set(payload) - {"rules", "required_all", "required_any", "header_scan_rows", "min_rows"}
    if unknown:
        raise ConfigError(f"Unknown keys in profile '{base.name}': {', '.join(sorted(unknown))}")
    updates: dict[str, Any] = {}
    if "rules" in payload:
        if not isinstance(payload["rules"], list):
            raise ConfigError(f"Profile '{base.name}': 'rules' must be a list.")
        updates["rules"] = tuple(_rule_from_dict(item) for item in payload["rules"])
    for key in ("required_all", "required_any"):
        if key in payload:
            roles = payload[key]
            if not isinstance(roles, list) or not all(isinstance(item, str) for item in roles):
                raise ConfigError(f"Profile '{base.name}': '{key}' must be a list of role names.")
            updates[key] = tuple(roles)
    for key in ("header_scan_rows", "min_rows"):
        if key in payload:
            if not isinstance(payload[key], int) or payload[key] < 0:
                raise ConfigError(f"Profile '{base.name}': '{key}' must be a non-negative integer.")
            updates[key] = payload[key]
    return replace(base, **updates)


def _thresholds_from_dict(base: Thresholds, payload: dict[str, Any]) -> Thresholds:
    if not isinstance(payload, dict):
        raise ConfigError("'thresholds' must be a JSON object.")
    known = {f.name: f for f in fields(Thresholds)}
    unknown = set(payload) - set(known)
    if unknown:
        raise ConfigError(f"Unknown thresholds: {', '.join(sorted(unknown))}")
    updates: dict[str, Any] = {}
    for key, value in payload.items():
        current = getattr(base, key)
        if isinstance(current, tuple):
            if not isinstance(value, list) or not all(isinstance(item, int) for item in value):
                raise ConfigError(f"Threshold '{key}' must be a list of integers.")
            updates[key] = tuple(value)
        elif isinstance(current, bool):
            if not isinstance(value, bool):
                raise ConfigError(f"Threshold '{key}' must be true or false.")
            updates[key] = value
        elif isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"Threshold '{key}' must be a number.")
        else:
            updates[key] = type(current)(value)
    return replace(base, **updates)


def config_from_dict(payload: dict[str, Any], base: IngestConfig = DEFAULT_CONFIG) -> IngestConfig:
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    unknown = set(payload) - set(KEYWORD_FIELDS) - {"thresholds", "profiles"}
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    updates: dict[str, Any] = {}
    for key in KEYWORD_FIELDS:
        if key in payload:
            updates[key] = _string_tuple(payload[key], key)
    if "thresholds" in payload:
        updates["thresholds"] = _thresholds_from_dict(base.thresholds, payload["thresholds"])
    profiles = payload.get("profiles", {})
    if not isinstance(profiles, dict):
        raise ConfigError("'profiles' must be a JSON object.")
    for name, profile_payload in profiles.items():
        attr = PROFILE_FIELDS.get(name)
        if attr is None:
            raise ConfigError(f"Unknown profile '{name}'. Expected one of: {', '.join(PROFILE_FIELDS)}")
        updates[attr] = _profile_from_dict(getattr(base, attr), profile_payload)
    return replace(base, **updates)


def load_config(path: str | Path | None = None) -> IngestConfig:
    """Load a JSON override on top of the defaults; no path and no env var means defaults."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return DEFAULT_CONFIG
        path = env_path

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}")
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError("Config must be .json, .yml, or .yaml")
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML configs are not supported yet. Use JSON for now.")
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not read config: {exc}") from exc
    return config_from_dict(payload)


def _rule_to_dict(rule: RoleRule) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": rule.role}
    for matcher in rule.matchers:
        if matcher.mode == "all":
            payload.setdefault("all", []).append(list(matcher.terms))
        else:
            payload.setdefault(matcher.mode, []).extend(matcher.terms)
    if rule.excludes:
        payload["excludes"] = list(rule.excludes)
    return payload


def config_to_dict(config: IngestConfig = DEFAULT_CONFIG) -> dict[str, Any]:
    payload: dict[str, Any] = {key: list(getattr(config, key)) for key in KEYWORD_FIELDS}
    payload["thresholds"] = {
        key: list(value) if isinstance(value, tuple) else value
        for key, value in asdict(config.thresholds).items()
    }
    payload["profiles"] = {}
    for name, attr in PROFILE_FIELDS.items():
        profile: SheetProfile = getattr(config, attr)
        payload["profiles"][name] = {
            "rules": [_rule_to_dict(rule) for rule in profile.rules],
            "required_all": list(profile.required_all),
            "required_any": list(profile.required_any),
            "header_scan_rows": profile.header_scan_rows,
            "min_rows": profile.min_rows,
        }
    return payload
