from enum import Enum


class Ecosystem(str, Enum):
    """Packaging domain of a component, used to scope search and merging."""
    JAVA = 'java'
    NODEJS = 'npm'
    DOTNET = 'dotnet'
    RUBY = 'ruby'
    PYTHON = 'python'
    PHP = 'php'
    GOLANG = 'golang'
    RUST = 'rust'
    IOS = 'ios'
    NATIVE = 'native'

    def __str__(self) -> str:
        return self.value
