"""
Project error hierarchy.

All errors inherit from ProjectError. They are raised synchronously by
ProjectManager operations, and an operation that raises leaves the store
unchanged.
"""


class ProjectError(Exception):
    """Base exception for project and file record failures."""

    pass


class InvalidPathError(ProjectError):
    """Project path does not exist or is not a directory."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid project path {path}: {reason}")


class DuplicateProjectError(ProjectError):
    """A project with the same root path is already registered."""

    def __init__(self, path: str, existing_id: str):
        self.path = path
        self.existing_id = existing_id
        super().__init__(f"Project already registered for {path} (id: {existing_id})")


class NotFoundError(ProjectError):
    """Base for unknown project or file identifiers."""

    pass


class ProjectNotFoundError(NotFoundError):
    """Raised when a project ID is not in the store."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class FileRecordNotFoundError(NotFoundError):
    """Raised when a file ID is not part of the given project."""

    def __init__(self, project_id: str, file_id: str):
        self.project_id = project_id
        self.file_id = file_id
        super().__init__(f"File not found: {file_id} (project: {project_id})")


class InvalidOutputError(ProjectError):
    """Output path override is not acceptable for the file."""

    def __init__(self, output_path: str, reason: str):
        self.output_path = output_path
        self.reason = reason
        super().__init__(f"Invalid output path {output_path}: {reason}")
