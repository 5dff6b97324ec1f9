from rq import Queue
from redis import Redis
from examhub.core.config import settings

REDIS_URL = settings.REDIS_URL or "redis://localhost:6379/0"
redis = Redis.from_url(REDIS_URL)
queue = Queue(settings.RQ_QUEUE, connection=redis)
