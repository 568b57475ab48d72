class BundleLoadError(Exception):
    pass


class FieldDescriptorContractError(TypeError):
    pass


class AssemblyCardinalityError(ValueError):
    def __init__(self, detail: str, key: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.key = key


class UnknownResourceTypeError(LookupError):
    def __init__(self, resource_type: str):
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type
