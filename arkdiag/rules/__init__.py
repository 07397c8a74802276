"""Reserved for diagnosis rules; it holds no modules at present."""

__all__: list[str] = []