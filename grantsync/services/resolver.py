"""Role template resolution: flattens a template reference graph."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from grantsync.core.logging import get_logger
from grantsync.exceptions import CycleError, NotFoundError
from grantsync.models.kinds import ROLE_TEMPLATE
from grantsync.models.resources import PolicyRule, RoleTemplate, is_deletion_requested
from grantsync.repositories.store import ObjectStore

logger = get_logger(__name__)

# name -> fetched template, shared by resolutions within one pass
TemplateCache = Dict[str, RoleTemplate]


@dataclass
class ResolvedRoleTemplate:
    """Result of resolving one root template."""

    name: str
    builtin: bool
    rules: List[PolicyRule] = field(default_factory=list)
    builtin_names: List[str] = field(default_factory=list)
    template_names: Set[str] = field(default_factory=set)

    @property
    def materialized_name(self) -> Optional[str]:
        """Name of the role this resolution owns, None for a builtin root."""
        return None if self.builtin else self.name


class TemplateResolver:
    """Resolve a RoleTemplate into its rule union and reachable builtins.

    Non-builtin templates contribute their rules and are expanded further;
    builtin templates are terminal and recorded by name only. Rules keep
    first-seen order: root first, then depth-first along references.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def resolve(self, name: str, cache: Optional[TemplateCache] = None) -> ResolvedRoleTemplate:
        cache = {} if cache is None else cache
        rules: Dict[PolicyRule, None] = {}
        builtins: Dict[str, None] = {}
        expanded: Set[str] = set()

        root = self._fetch(name, cache)
        self._walk(root, [], cache, rules, builtins, expanded)

        resolved = ResolvedRoleTemplate(
            name=root.name,
            builtin=root.builtin,
            rules=list(rules),
            builtin_names=list(builtins),
            template_names=expanded,
        )
        logger.debug(
            f"Resolved role template {name}: {len(resolved.rules)} rules, "
            f"builtins {resolved.builtin_names}"
        )
        return resolved

    def _fetch(self, name: str, cache: TemplateCache) -> RoleTemplate:
        template = cache.get(name)
        if template is None:
            # NotFoundError propagates; every referenced template is required
            body = self.store.get(ROLE_TEMPLATE, name)
            if is_deletion_requested(body):
                # its roles are being removed and must not be recreated
                raise NotFoundError(ROLE_TEMPLATE.kind, name, message="marked for deletion")
            template = RoleTemplate.from_dict(body)
            cache[name] = template
        return template

    def _walk(
        self,
        template: RoleTemplate,
        path: List[str],
        cache: TemplateCache,
        rules: Dict[PolicyRule, None],
        builtins: Dict[str, None],
        expanded: Set[str],
    ) -> None:
        if template.name in path:
            raise CycleError(path[path.index(template.name):] + [template.name])
        if template.name in expanded:
            return
        expanded.add(template.name)

        if template.builtin:
            builtins[template.name] = None
            return

        rules.update(dict.fromkeys(template.rules))
        path = path + [template.name]
        for ref in template.role_template_names:
            self._walk(self._fetch(ref, cache), path, cache, rules, builtins, expanded)
