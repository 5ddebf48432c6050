"""LearnFlow: knowledge extraction, Feynman practice and spaced-repetition review."""

__version__ = '1.0.0'
