import litellm

# Model used for local token counting. text-embedding-3-small and the chat
# models share the cl100k_base encoding, so gpt-4 works for both.
_DEFAULT_TOKEN_COUNTER_MODEL = "gpt-4"


class Tokenizer:
    def __init__(self, model: str | None = None):
        self.model = model or _DEFAULT_TOKEN_COUNTER_MODEL

    def num_tokens_from_string(self, string: str) -> int:
        """Returns the number of tokens in a text string."""
        return litellm.token_counter(model=self.model, text=string)

    def truncate(self, string: str, max_tokens: int) -> str:
        """
        Trim a string so it fits within max_tokens.

        Cuts on whitespace boundaries, dropping words from the end until the
        token count fits.
        """
        if max_tokens <= 0:
            return ""
        if self.num_tokens_from_string(string) <= max_tokens:
            return string

        words = string.split()
        low, high = 0, len(words)
        # Binary search for the longest word prefix that fits
        while low < high:
            mid = (low + high + 1) // 2
            if self.num_tokens_from_string(" ".join(words[:mid])) <= max_tokens:
                low = mid
            else:
                high = mid - 1
        return " ".join(words[:low])
