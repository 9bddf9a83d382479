"""PaperRank: hybrid lexical/semantic relevance ranking for research papers."""

__version__ = "1.0.0"
