from .formatting import english_enumerate, quoted  # noqa: F401
from .naming import camelize, dasherize, pluralize, singularize, underscore  # noqa: F401
from .typing import UNSPECIFIED, UnspecifiedType, assert_not_none  # noqa: F401
