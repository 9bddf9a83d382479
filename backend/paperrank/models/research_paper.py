from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func
from paperrank.database import Base
import uuid


class ResearchPaper(Base):
    __tablename__ = "research_papers"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    abstract = Column(Text)

    # Discovery metadata
    authors = Column(JSON)  # List of names, or a delimited string from older imports
    year = Column(Integer)  # Publication year
    doi = Column(String(255))  # DOI identifier
    url = Column(String(500))  # External URL
    pdf_url = Column(String(500))
    source = Column(String(50))  # Where the paper was saved from (arxiv, pubmed, upload, ...)
    journal = Column(String(255))
    citations = Column(Integer, default=0)
    tags = Column(JSON)  # List of labels

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<ResearchPaper(id={self.id}, title='{self.title}', owner_id={self.owner_id})>"
