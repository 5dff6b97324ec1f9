import logging
from rq import Worker
from examhub.core.config import settings
from examhub.jobs.queue import queue, redis
from examhub.jobs.expiry_job import sweep_expired_attempts

if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    # seed the self-rescheduling sweep
    queue.enqueue(sweep_expired_attempts)
    w = Worker([settings.RQ_QUEUE], connection=redis)
    w.work(with_scheduler=True)
