class DatabasePool:
    MAX_INACTIVE_CONNECTION_LIFETIME = 300.0


class Embedding:
    DIMENSIONS = 1536


class SimilaritySearch:
    DEFAULT_LIMIT = 5
    DEFAULT_THRESHOLD = 0.8
    MIN_SIMILARITY = -1.0
    MAX_SIMILARITY = 1.0


class MessageRoles:
    VALID: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})


class ChatDescriptions:
    COPY_PREFIX = "Copy of "
    COPY_DEFAULT = "Copied Chat"
    FORK_TEMPLATE = "Fork of {description} (up to message {message_id})"
    FORK_DEFAULT = "Forked Chat (up to message {message_id})"


class ProjectColumns:
    # Only these columns may appear in a dynamic UPDATE built from a changeset.
    UPDATABLE: tuple[str, ...] = ("name", "description", "code_content", "preview_url")
    JSON: frozenset[str] = frozenset({"code_content"})
