import typing

from .exceptions import InvalidIncludePathError, NotCountableError
from .models import IncludePaths, IncludeSpec, RelationCount, RelationshipPath
from .relations import Relation, RelationshipKind


class EagerLoadNode:
    """
    One relation to load.  A node either carries a nested plan over the
    related resource type, or, for polymorphic to-one relations, one plan per
    concrete resource type.
    """

    relation_name: str
    children: typing.Optional["EagerLoadPlan"]
    morphs: typing.Dict[str, "EagerLoadPlan"]

    @property
    def is_polymorphic(self) -> bool:
        return bool(self.morphs)

    def merge(self, other: "EagerLoadNode") -> None:
        assert self.relation_name == other.relation_name
        if other.children is not None:
            if self.children is None:
                self.children = other.children
            else:
                self.children.merge(other.children)
        for type_name, plan in other.morphs.items():
            if type_name in self.morphs:
                self.morphs[type_name].merge(plan)
            else:
                self.morphs[type_name] = plan

    def __repr__(self):
        return f"<EagerLoadNode {self.relation_name} children={self.children!r} morphs={self.morphs!r}>"

    def __init__(
        self,
        relation_name: str,
        children: typing.Optional["EagerLoadPlan"] = None,
        morphs: typing.Optional[typing.Mapping[str, "EagerLoadPlan"]] = None,
    ):
        self.relation_name = relation_name
        self.children = children
        self.morphs = dict(morphs or {})


class EagerLoadPlan:
    resource_type: "schema.ResourceType"
    nodes: typing.Dict[str, EagerLoadNode]

    def add(self, node: EagerLoadNode) -> None:
        existing = self.nodes.get(node.relation_name)
        if existing is None:
            self.nodes[node.relation_name] = node
        else:
            existing.merge(node)

    def merge(self, other: "EagerLoadPlan") -> None:
        for node in other.nodes.values():
            self.add(node)

    def is_empty(self) -> bool:
        return not self.nodes

    def relations(self) -> typing.List[str]:
        """
        Return the dot-delimited relation paths to load, leaving out the
        polymorphic nodes that are loaded per concrete type.  Paths that are
        a prefix of another path are collapsed into the longer one.
        """
        retval: typing.List[str] = []
        for node in self.nodes.values():
            if node.is_polymorphic:
                continue
            nested = node.children.relations() if node.children is not None else []
            if nested:
                retval.extend(f"{node.relation_name}.{path}" for path in nested)
            else:
                retval.append(node.relation_name)
        return sorted(retval)

    def morphs(self) -> typing.Dict[str, typing.Dict[str, "EagerLoadPlan"]]:
        """
        Return the polymorphic nodes keyed by their dot-delimited path, each
        mapping a concrete resource type name to the plan for that type.
        """
        retval: typing.Dict[str, typing.Dict[str, EagerLoadPlan]] = {}
        for node in self.nodes.values():
            if node.is_polymorphic:
                retval[node.relation_name] = dict(node.morphs)
            elif node.children is not None:
                for path, morphs in node.children.morphs().items():
                    retval[f"{node.relation_name}.{path}"] = morphs
        return retval

    def __iter__(self) -> typing.Iterator[EagerLoadNode]:
        return iter(self.nodes.values())

    def __len__(self):
        return len(self.nodes)

    def __repr__(self):
        return f"<EagerLoadPlan {self.resource_type.name} {list(self.nodes.values())!r}>"

    def __init__(self, resource_type: "schema.ResourceType"):
        self.resource_type = resource_type
        self.nodes = {}


def _group_by_first(
    paths: typing.Iterable[RelationshipPath],
) -> typing.Dict[str, typing.List[RelationshipPath]]:
    retval: typing.Dict[str, typing.List[RelationshipPath]] = {}
    for path in paths:
        rest = retval.setdefault(path.first, [])
        suffix = path.skip(1)
        if suffix is not None:
            rest.append(suffix)
    return retval


class EagerLoader:
    """
    Expands include paths into an :class:`EagerLoadPlan`.

    :param ResourceType resource_type: The resource type the paths start from.
    :param include: The include paths.
    :param bool skip_missing_fields: ``True`` to silently stop at the first
                                     segment that is not an includable relationship
                                     instead of raising :class:`InvalidIncludePathError`.
    :param bool include_defaults: ``False`` to leave out the default include paths
                                  of the resource types along the way.
    """

    resource_type: "schema.ResourceType"
    include: IncludePaths
    skip_missing_fields: bool
    include_defaults: bool

    def plan(self) -> EagerLoadPlan:
        return self._expand(
            self.resource_type, list(self.include), (), self.skip_missing_fields, self.include_defaults
        )

    def _resolve(
        self,
        resource_type: "schema.ResourceType",
        field_name: str,
        prefix: typing.Tuple[str, ...],
        skip_missing_fields: bool,
    ) -> typing.Optional[Relation]:
        relation = resource_type.relationships.get(field_name)
        if relation is None or not relation.include_path:
            if skip_missing_fields:
                return None
            raise InvalidIncludePathError(self.resource_type, ".".join(prefix + (field_name,)))
        return relation

    def _defaults(
        self, resource_type: "schema.ResourceType", prefix: typing.Tuple[str, ...]
    ) -> EagerLoadPlan:
        return self._expand(
            resource_type,
            list(IncludePaths.cast(resource_type.with_)),
            prefix,
            True,
            False,
        )

    def _expand(
        self,
        resource_type: "schema.ResourceType",
        paths: typing.Sequence[RelationshipPath],
        prefix: typing.Tuple[str, ...],
        skip_missing_fields: bool,
        include_defaults: bool,
    ) -> EagerLoadPlan:
        plan = EagerLoadPlan(resource_type)
        if include_defaults and resource_type.with_:
            plan.merge(self._defaults(resource_type, prefix))

        for field_name, rest in _group_by_first(paths).items():
            relation = self._resolve(resource_type, field_name, prefix, skip_missing_fields)
            if relation is None:
                continue
            path = prefix + (field_name,)
            kind = relation.kind
            if kind is RelationshipKind.TO_ONE or kind is RelationshipKind.TO_MANY:
                plan.add(
                    EagerLoadNode(
                        relation.relation_name,
                        children=self._expand(
                            relation.inverse_type, rest, path, skip_missing_fields, include_defaults
                        ),
                    )
                )
            elif kind is RelationshipKind.POLYMORPHIC_TO_ONE:
                plan.add(
                    EagerLoadNode(
                        relation.relation_name,
                        morphs=self._expand_morphs(
                            relation, rest, path, skip_missing_fields, include_defaults
                        ),
                    )
                )
            elif kind is RelationshipKind.POLYMORPHIC_TO_MANY:
                for child in typing.cast("relations.MorphToMany", relation).relations:
                    plan.add(
                        EagerLoadNode(
                            child.relation_name,
                            children=self._expand(
                                child.inverse_type, rest, path, True, include_defaults
                            ),
                        )
                    )
            else:
                raise AssertionError(f"unhandled relationship kind: {kind}")
        return plan

    def _expand_morphs(
        self,
        relation: Relation,
        paths: typing.Sequence[RelationshipPath],
        prefix: typing.Tuple[str, ...],
        skip_missing_fields: bool,
        include_defaults: bool,
    ) -> typing.Dict[str, EagerLoadPlan]:
        if not skip_missing_fields:
            for path in paths:
                if not any(t.is_relationship(path.first) for t in relation.inverse_types):
                    raise InvalidIncludePathError(
                        self.resource_type, ".".join(prefix + tuple(path))
                    )
        morphs: typing.Dict[str, EagerLoadPlan] = {}
        for inverse_type in relation.inverse_types:
            subplan = self._expand(
                inverse_type,
                [path for path in paths if inverse_type.is_relationship(path.first)],
                prefix,
                skip_missing_fields,
                include_defaults,
            )
            if not subplan.is_empty():
                morphs[inverse_type.name] = subplan
        return morphs

    def __init__(
        self,
        resource_type: "schema.ResourceType",
        include: IncludeSpec,
        skip_missing_fields: bool = False,
        include_defaults: bool = True,
    ):
        self.resource_type = resource_type
        self.include = IncludePaths.cast(include)
        self.skip_missing_fields = skip_missing_fields
        self.include_defaults = include_defaults


def expand(
    resource_type: "schema.ResourceType",
    include: IncludeSpec,
    skip_missing_fields: bool = False,
    include_defaults: bool = True,
) -> EagerLoadPlan:
    return EagerLoader(resource_type, include, skip_missing_fields, include_defaults).plan()


class CountableLoader:
    resource_type: "schema.ResourceType"
    names: typing.Tuple[str, ...]

    def counts(self) -> typing.List[RelationCount]:
        retval: typing.List[RelationCount] = []
        for name in self.names:
            relation = self.resource_type.relationships.get(name)
            if relation is None or not relation.countable:
                raise NotCountableError(self.resource_type, name)
            kind = relation.kind
            if kind is RelationshipKind.POLYMORPHIC_TO_MANY:
                retval.extend(
                    child.count()
                    for child in typing.cast("relations.MorphToMany", relation).relations
                )
            elif kind is RelationshipKind.TO_MANY:
                retval.append(relation.count())
            else:
                raise NotCountableError(self.resource_type, name)
        return retval

    def __init__(self, resource_type: "schema.ResourceType", names: typing.Iterable[str]):
        self.resource_type = resource_type
        self.names = tuple(dict.fromkeys(names))


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
