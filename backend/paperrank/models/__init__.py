from .research_paper import ResearchPaper

__all__ = ["ResearchPaper"]
