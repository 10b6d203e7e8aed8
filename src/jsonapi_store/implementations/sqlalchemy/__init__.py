from .declarative import Declarative, Meta, declarative_with_defaults  # noqa: F401
from .defaults import (  # noqa: F401
    DefaultDriverImpl,
    DefaultStringMarshallerImpl,
    StringMarshaller,
)
from .querying import SQLAQuery  # noqa: F401
