from dataclasses import dataclass

# Characters with a meaning in Redis glob-style patterns (SCAN MATCH, KEYS)
GLOB_SPECIAL_CHARS = "\\*?[]"


def escape_glob(value: str) -> str:
    return "".join("\\" + ch if ch in GLOB_SPECIAL_CHARS else ch for ch in value)


@dataclass(frozen=True)
class QueueKeys:
    # Keyspace prefix ("bull" -> "bull:<queue>:<state>")
    prefix: str = "bull"

    # Key marking a queue as discoverable
    meta_suffix: str = ":meta"

    @property
    def meta_pattern(self) -> str:
        # The prefix is literal, only the queue name is a wildcard
        return f"{escape_glob(self.prefix)}:*{escape_glob(self.meta_suffix)}"

    def meta_key(self, queue_name: str) -> str:
        return f"{self.prefix}:{queue_name}{self.meta_suffix}"

    def queue_name(self, meta_key: str) -> str:
        # Queue names may contain ":", so cut prefix and suffix instead of splitting.
        head = f"{self.prefix}:"
        if (
            len(meta_key) < len(head) + len(self.meta_suffix)
            or not meta_key.startswith(head)
            or not meta_key.endswith(self.meta_suffix)
        ):
            raise ValueError(f"Not a queue meta key: {meta_key!r}")
        return meta_key[len(head):-len(self.meta_suffix)]

    def state_key(self, queue_name: str, state: str) -> str:
        return f"{self.prefix}:{queue_name}:{state}"
