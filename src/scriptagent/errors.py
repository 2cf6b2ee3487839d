"""
Exception hierarchy.

Only configuration and lookup errors cross component boundaries as
exceptions. Execution failures of a function are FunctionOutcome values.
"""


class ScriptAgentError(Exception):
    """Base class for all scriptagent errors."""
    pass


class ConfigurationError(ScriptAgentError):
    """A programming error in how functions or agents were set up."""
    pass


class DuplicateFunctionError(ConfigurationError):
    """A function name was registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Function already registered: {name}")
        self.name = name


class UnknownFunctionError(ConfigurationError):
    """A function name is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


class RegistryFrozenError(ConfigurationError):
    """Registration was attempted after the registry was frozen."""
    pass


class InvalidAgentConfigError(ConfigurationError):
    """An agent configuration is missing required functions."""
    pass


class ScriptNotFoundError(ScriptAgentError):
    """The script backing a function does not exist in the repository."""

    def __init__(self, name: str):
        super().__init__(f"Unable to find the script {name}")
        self.name = name


class WorkspaceError(ScriptAgentError):
    """A workspace operation failed (missing file, path outside root)."""
    pass


class ScriptFailedError(ScriptAgentError):
    """A script ran but failed; raised by native functions that run scripts."""
    pass
