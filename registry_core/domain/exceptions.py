class RegistryException(Exception):
    """Base exception for all registry-core errors."""
    pass

class ConstraintViolationException(RegistryException):
    """Raised when a write would reference an entity that does not exist."""
    def __init__(self, entity: str, key: str, message: str = "Referenced entity does not exist."):
        self.entity = entity
        self.key = key
        super().__init__(f"{message} {entity}: {key}")

class ManifestDecodeException(RegistryException):
    """Raised when a stored manifest cannot be decoded."""
    pass


class UnsupportedDialectException(RegistryException):
    """Raised when the database backend cannot express the upserts the stores rely on."""
    def __init__(self, dialect: str):
        self.dialect = dialect
        super().__init__(f"Upserts are not supported for database dialect '{dialect}'.")
