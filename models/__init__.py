"""SQLAlchemy models package.

All models share the single declarative ``Base`` defined in ``db.py``;
importing this package registers every table on ``Base.metadata`` so that
``Base.metadata.create_all()`` builds a complete schema on a fresh DB.
"""

from db import Base  # re-export a single shared Base

from models.crawl_runs import CrawlRun  # noqa: F401
from models.technical_documents import TechnicalDocument  # noqa: F401
