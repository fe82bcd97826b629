"""数据模型."""

from neureed.models.app_settings import AppSettings
from neureed.models.article import Article, ReadArticle, StarredArticle
from neureed.models.database import get_session, init_db
from neureed.models.feed import Feed, UserCategory, UserFeed, UserFeedCategory
from neureed.models.feedback import ArticleFeedback, UserPattern
from neureed.models.job_run import JobRun
from neureed.models.notification import Notification
from neureed.models.user import User, UserPreferences

__all__ = [
    "AppSettings",
    "Article",
    "ArticleFeedback",
    "Feed",
    "JobRun",
    "Notification",
    "ReadArticle",
    "StarredArticle",
    "User",
    "UserCategory",
    "UserFeed",
    "UserFeedCategory",
    "UserPattern",
    "UserPreferences",
    "get_session",
    "init_db",
]
