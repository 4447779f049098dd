from .files import FileService  # NOQA: F401

# EOF
