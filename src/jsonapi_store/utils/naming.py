import re

_camel_boundary = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_separator = re.compile(r"[-_\s]+")


def underscore(name: str) -> str:
    """
    Convert a field name (``camelCase``, ``dashed-name``) into the snake
    case used for storage columns and relations.
    """
    return _separator.sub("_", _camel_boundary.sub("_", name)).lower()


def dasherize(name: str) -> str:
    return underscore(name).replace("_", "-")


def camelize(name: str) -> str:
    head, *rest = underscore(name).split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def pluralize(name: str) -> str:
    if name.endswith("s"):
        return name
    if name.endswith("y") and name[-2:-1] not in ("a", "e", "i", "o", "u", ""):
        return name[:-1] + "ies"
    if name.endswith(("x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def singularize(name: str) -> str:
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith(("xes", "zes", "ches", "shes")):
        return name[:-2]
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name
