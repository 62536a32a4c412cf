"""
Dotted-key codec.

Keys are dot-separated paths such as ``"users.42.profile"``. Every entry
stores its ancestor prefixes so namespace queries never re-parse keys:

    >>> namespace_prefixes("users.42.profile")
    ['', 'users', 'users.42']

The root prefix ``""`` is always first and the key itself is never part of
its own prefix list, so ``namespace_prefixes("users") == [""]``.
"""

SEPARATOR = "."
ROOT_NAMESPACE = ""


def namespace_prefixes(key: str) -> list[str]:
    """Return the ancestor namespaces of ``key``, root first."""
    components = key.split(SEPARATOR)
    return [SEPARATOR.join(components[:index]) for index in range(len(components))]


def split_partition(key: str) -> tuple[str, str]:
    """
    Split ``key`` into its partition (first component) and the rest.

    >>> split_partition("users.42.profile")
    ('users', '42.profile')
    >>> split_partition("users")
    ('users', '')
    """
    partition, _, rest = key.partition(SEPARATOR)
    return partition, rest
