from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from crewscope.models.tenancy import SiteRole


class AuthConfig(BaseModel):
    provider: Literal["dummy", "jwt"] = "dummy"
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None


class DefaultRule(BaseModel):
    auth_required: bool = True
    admin_only: bool = False


class RouteRule(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: ["GET"])

    auth_required: bool | None = None
    admin_only: bool | None = None

    def normalized_methods(self) -> set[str]:
        return {m.upper() for m in self.methods}


class RolesConfig(BaseModel):
    # Site roles that count as "can manage this site" in the scope manager.
    manager_roles: list[str] = Field(default_factory=lambda: [SiteRole.SITE_MANAGER.value])
    # Principals with this baseline role never get a site switcher.
    lowest_role: str = SiteRole.FIELD_WORKER.value


class ResourceRule(BaseModel):
    modify_roles: list[str] | None = None
    create_roles: list[str] | None = None
    read_roles: list[str] | None = None


class SecurityConfigModel(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    default: DefaultRule = Field(default_factory=DefaultRule)
    routes: list[RouteRule] = Field(default_factory=list)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    resources: dict[str, ResourceRule] = Field(default_factory=dict)


@dataclass(frozen=True)
class EffectiveRule:
    """
    Fully-resolved rule (defaults applied) for a particular request.
    """

    auth_required: bool
    admin_only: bool


def _path_template_to_regex(path_template: str) -> re.Pattern[str]:
    # "/sites/{site_id}" -> r"^/sites/[^/]+$"
    regex = re.sub(r"\{[^/]+\}", r"[^/]+", path_template)
    return re.compile(rf"^{regex}$")


class SecurityConfig:
    """
    Runtime helper around validated config + route matching.
    """

    def __init__(self, model: SecurityConfigModel):
        self.model = model

        compiled: list[tuple[str, re.Pattern[str], RouteRule]] = []
        for rule in self.model.routes:
            compiled.append((rule.path, _path_template_to_regex(rule.path), rule))

        # Prefer exact matches over templates.
        self._exact_rules: dict[str, list[RouteRule]] = {}
        for r in self.model.routes:
            self._exact_rules.setdefault(r.path, []).append(r)
        self._compiled_rules = compiled

    @classmethod
    def default(cls) -> SecurityConfig:
        return cls(SecurityConfigModel())

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    @property
    def roles(self) -> RolesConfig:
        return self.model.roles

    def match(self, path: str, method: str) -> EffectiveRule:
        """
        Find the best matching rule for (path, method), then apply defaults.
        """

        method = method.upper()
        default = self.model.default

        # 1) exact path match
        for candidate in self._exact_rules.get(path, []):
            if method in candidate.normalized_methods():
                return _effective(candidate, default)

        # 2) template match
        for _template, regex, candidate in self._compiled_rules:
            if method not in candidate.normalized_methods():
                continue
            if regex.match(path):
                return _effective(candidate, default)

        # 3) no match -> defaults
        return EffectiveRule(auth_required=default.auth_required, admin_only=default.admin_only)


def _effective(rule: RouteRule, default: DefaultRule) -> EffectiveRule:
    admin_only = default.admin_only if rule.admin_only is None else rule.admin_only
    # An admin-only route is always authenticated, whatever the default says.
    inferred_auth_required = default.auth_required or admin_only

    return EffectiveRule(
        auth_required=inferred_auth_required if rule.auth_required is None else rule.auth_required,
        admin_only=admin_only,
    )


def load_security_config(path: Path) -> SecurityConfig:
    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "security" not in raw:
        raise ValueError(f"Missing top-level 'security' key in config: {path}")

    model = SecurityConfigModel.model_validate(raw["security"])
    return SecurityConfig(model)
