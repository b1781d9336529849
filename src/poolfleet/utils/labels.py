""" Label selector helpers.

Selectors follow the Kubernetes LabelSelector shape
(``matchLabels`` / ``matchExpressions``) and may be given as a dict or as
the pydantic ``LabelSelector`` model.
"""

from pydantic import BaseModel

OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


def _as_dict(selector):
    if selector is None:
        return None
    if isinstance(selector, BaseModel):
        return selector.model_dump()
    return selector


def _requirements(selector):
    """ Yield validated (key, operator, values) triples of a selector.
    """
    for key, value in (selector.get("matchLabels") or {}).items():
        yield key, "In", [value]

    for expr in selector.get("matchExpressions") or []:
        key = expr.get("key")
        operator = expr.get("operator")
        values = expr.get("values") or []
        if not key:
            raise ValueError(f"label selector requirement without key: {expr}")
        if operator not in OPERATORS:
            raise ValueError(f"{operator!r} is not a valid label selector operator")
        if operator in ("In", "NotIn") and not values:
            raise ValueError(f"values must be non-empty for operator {operator}")
        if operator in ("Exists", "DoesNotExist") and values:
            raise ValueError(f"values must be empty for operator {operator}")
        yield key, operator, sorted(values)


def selector_to_string(selector):
    """ Render a selector in the ``label_selector`` query syntax.

    An empty selector renders as "" and matches everything.

    Raises:
        ValueError: the selector is missing or malformed
    """
    selector = _as_dict(selector)
    if selector is None:
        raise ValueError("label selector is required")

    parts = []
    for key, operator, values in _requirements(selector):
        if operator == "In" and len(values) == 1:
            parts.append(f"{key}={values[0]}")
        elif operator == "In":
            parts.append(f"{key} in ({','.join(values)})")
        elif operator == "NotIn":
            parts.append(f"{key} notin ({','.join(values)})")
        elif operator == "Exists":
            parts.append(key)
        else:
            parts.append(f"!{key}")
    return ",".join(parts)


def selector_matches(selector, labels):
    """ Check whether a label set satisfies every requirement of a selector.
    """
    selector = _as_dict(selector)
    if selector is None:
        return False
    labels = labels or {}

    for key, operator, values in _requirements(selector):
        if operator == "In" and labels.get(key) not in values:
            return False
        if operator == "NotIn" and key in labels and labels[key] in values:
            return False
        if operator == "Exists" and key not in labels:
            return False
        if operator == "DoesNotExist" and key in labels:
            return False
    return True
