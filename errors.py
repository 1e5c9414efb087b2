"""
Exceptions raised by the studio core and its collaborators.
"""


class StudioError(Exception):
    """Base class for studio errors."""


class GenerationError(StudioError):
    """The image model rejected a request or returned no usable image."""

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class DuplicateSkuError(StudioError):
    """SKU input repeats itself or names images that are already uploaded."""

    def __init__(self, duplicates_in_input, already_uploaded):
        self.duplicates_in_input = list(duplicates_in_input)
        self.already_uploaded = list(already_uploaded)
        parts = []
        if self.duplicates_in_input:
            parts.append(f"Repeated SKUs in input: {', '.join(self.duplicates_in_input)}.")
        if self.already_uploaded:
            parts.append(f"SKUs already uploaded: {', '.join(self.already_uploaded)}.")
        parts.append("Please remove the duplicates to continue.")
        super().__init__(" ".join(parts))


class PresetExistsError(StudioError):
    def __init__(self, name):
        super().__init__(f"A preset named '{name}' already exists. Confirm overwrite to replace it.")
        self.name = name


class PresetNotFoundError(StudioError):
    def __init__(self, name):
        super().__init__(f"No preset named '{name}'.")
        self.name = name
