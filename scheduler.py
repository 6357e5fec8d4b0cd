"""
定时任务调度器
负责定期清理过期、已撤销、使用次数过多以及长期不活跃用户的令牌记录
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask

from models import TokenKind
from service.token_store import TokenStore
from utils.token_codec import parse_duration

logger = logging.getLogger(__name__)

# 清理任务: (任务ID, 任务名称, cron配置项)
CLEANUP_JOBS = [
    ('cleanup_expired_access_tokens', '清理过期访问令牌', 'CLEANUP_ACCESS_CRON'),
    ('cleanup_expired_special_tokens', '清理过期重置/验证令牌', 'CLEANUP_SPECIAL_CRON'),
    ('cleanup_revoked_tokens', '清理已撤销令牌', 'CLEANUP_REVOKED_CRON'),
    ('cleanup_inactive_sessions', '清理不活跃用户会话', 'CLEANUP_INACTIVE_CRON'),
    ('cleanup_overused_tokens', '清理使用次数过多的令牌', 'CLEANUP_OVERUSED_CRON'),
    ('comprehensive_cleanup', '每周全面清理', 'CLEANUP_COMPREHENSIVE_CRON'),
]

# 全面清理中各分类的结果字段
CATEGORY_KEYS = {
    'cleanup_expired_access_tokens': 'expired_access',
    'cleanup_expired_special_tokens': 'expired_special',
    'cleanup_revoked_tokens': 'revoked',
    'cleanup_inactive_sessions': 'inactive',
    'cleanup_overused_tokens': 'overused',
}

# 统计快照使用的执行器
STATS_EXECUTOR = 'stats'


class SweeperHandle:
    """调度器启动后返回的句柄，持有所有清理任务"""

    def __init__(self, jobs: Dict[str, object]):
        self.jobs = jobs

    def pause_all(self):
        for job in self.jobs.values():
            job.pause()

    def resume_all(self):
        for job in self.jobs.values():
            job.resume()

    def __len__(self):
        return len(self.jobs)


class TokenCleanupScheduler:
    """令牌清理调度器"""

    STOPPED = 'stopped'
    RUNNING = 'running'
    SHUTDOWN = 'shutdown'

    def __init__(self, app: Flask, store: Optional[TokenStore] = None):
        self.app = app
        self.store = store or TokenStore()
        self.scheduler = BackgroundScheduler(timezone='UTC')
        self.job_timeout = app.config.get('CLEANUP_JOB_TIMEOUT', 300)
        self.revoked_retention = parse_duration(app.config.get('REVOKED_TOKEN_RETENTION', '7d'))
        self.inactive_threshold = parse_duration(app.config.get('INACTIVE_SESSION_THRESHOLD', '30d'))
        self.usage_limits = dict(app.config.get('TOKEN_USAGE_LIMITS', {TokenKind.ACCESS: 1000}))
        self.state = self.STOPPED
        self.handle: Optional[SweeperHandle] = None
        self._lock = threading.Lock()
        # 每个任务使用独立的单线程执行器，卡住的任务只会阻塞它自己
        self._executors = {
            key: ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'token-cleanup-{key}')
            for key in [job_id for job_id, _, _ in CLEANUP_JOBS] + [STATS_EXECUTOR]
        }
        self._categories = {
            'cleanup_expired_access_tokens': self.cleanup_expired_access_tokens,
            'cleanup_expired_special_tokens': self.cleanup_expired_special_tokens,
            'cleanup_revoked_tokens': self.cleanup_revoked_tokens,
            'cleanup_inactive_sessions': self.cleanup_inactive_sessions,
            'cleanup_overused_tokens': self.cleanup_overused_tokens,
        }

    def start(self) -> SweeperHandle:
        """启动调度器，重复调用不会重复添加任务"""
        with self._lock:
            if self.state == self.SHUTDOWN:
                raise RuntimeError('调度器已关闭，无法重新启动')
            if self.state == self.RUNNING:
                logger.warning("令牌清理调度器已在运行，忽略重复启动")
                return self.handle # type: ignore

            if self.handle is None:
                jobs = {}
                for job_id, name, cron_key in CLEANUP_JOBS:
                    jobs[job_id] = self.scheduler.add_job(
                        func=self.run_job,
                        trigger=CronTrigger.from_crontab(self.app.config[cron_key], timezone='UTC'),
                        args=[job_id],
                        id=job_id,
                        name=name,
                        replace_existing=True,
                        max_instances=1,
                        coalesce=True,
                        misfire_grace_time=300,
                    )
                self.handle = SweeperHandle(jobs)
                self.scheduler.start()
            else:
                self.handle.resume_all()

            self.state = self.RUNNING
            logger.info(f"令牌清理调度器已启动，共 {len(self.handle)} 个任务")
            return self.handle

    def stop(self):
        """暂停所有任务（保留任务定义，可再次 start）"""
        with self._lock:
            if self.state != self.RUNNING:
                return
            self.handle.pause_all() # type: ignore
            self.state = self.STOPPED
            logger.info("令牌清理调度器已停止")

    def shutdown(self):
        """关闭调度器线程"""
        with self._lock:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            for executor in self._executors.values():
                executor.shutdown(wait=False, cancel_futures=True)
            self.state = self.SHUTDOWN
            logger.info("令牌清理调度器已关闭")

    # ------------------------------------------------------------------
    # 各类清理操作（需在应用上下文中调用）
    # ------------------------------------------------------------------

    def cleanup_expired_access_tokens(self) -> int:
        """清理过期的访问令牌"""
        count = self.store.delete_expired([TokenKind.ACCESS])
        logger.info(f"已清理 {count} 个过期访问令牌")
        return count

    def cleanup_expired_special_tokens(self) -> int:
        """清理过期的重置密码和邮箱验证令牌"""
        count = self.store.delete_expired(TokenKind.SPECIAL)
        logger.info(f"已清理 {count} 个过期重置/验证令牌")
        return count

    def cleanup_revoked_tokens(self) -> int:
        """清理撤销时间超过保留期的令牌"""
        count = self.store.delete_revoked_older_than(self.revoked_retention)
        logger.info(f"已清理 {count} 个已撤销令牌")
        return count

    def cleanup_inactive_sessions(self) -> int:
        """清理长期未登录用户的令牌"""
        count = self.store.delete_for_inactive_owners(self.inactive_threshold)
        logger.info(f"已清理 {count} 个不活跃用户的令牌")
        return count

    def cleanup_overused_tokens(self) -> int:
        """清理使用次数超过上限的令牌"""
        count = self.store.delete_overused(self.usage_limits)
        logger.info(f"已清理 {count} 个使用次数过多的令牌")
        return count

    def cleanup_all_tokens(self) -> dict:
        """
        依次执行所有清理操作

        某一项失败时记为0并继续执行其余各项

        Returns:
            dict: 各分类清理数量、总数及失败的分类
        """
        result = {key: 0 for key in CATEGORY_KEYS.values()}
        failed = []
        for job_id, func in self._categories.items():
            try:
                result[CATEGORY_KEYS[job_id]] = func()
            except Exception as e:
                failed.append(job_id)
                logger.error(f"全面清理中 {job_id} 失败: {str(e)}", exc_info=True)
        result['total'] = sum(result[key] for key in CATEGORY_KEYS.values())
        result['failed'] = failed
        logger.info(f"全面清理完成，共清理 {result['total']} 个令牌: {result}")
        return result

    # ------------------------------------------------------------------
    # 定时任务与手动触发
    # ------------------------------------------------------------------

    def run_job(self, job_id: str) -> dict:
        """
        执行一个定时任务：记录清理前后的统计并输出差值

        任务异常只记录日志，不影响该任务的下一次执行以及其他任务
        """
        logger.debug(f"开始执行定时任务 {job_id}...")
        func = self.cleanup_all_tokens if job_id == 'comprehensive_cleanup' else self._categories[job_id]
        try:
            before = self._call(STATS_EXECUTOR, self.store.stats)
            result = self._call(job_id, func)
            after = self._call(STATS_EXECUTOR, self.store.stats)
        except FutureTimeoutError:
            logger.error(f"定时任务 {job_id} 执行超时（{self.job_timeout} 秒）")
            return {'job': job_id, 'cleaned': 0, 'error': 'timeout'}
        except Exception as e:
            logger.error(f"执行定时任务 {job_id} 时发生错误: {str(e)}", exc_info=True)
            return {'job': job_id, 'cleaned': 0, 'error': str(e)}

        cleaned = result['total'] if isinstance(result, dict) else result
        logger.info(
            f"定时任务 {job_id} 完成，清理 {cleaned} 个令牌，"
            f"令牌总数 {before['total']} -> {after['total']}"
        )
        return {'job': job_id, 'cleaned': cleaned, 'before_stats': before, 'after_stats': after}

    def trigger_manual_cleanup(self) -> dict:
        """手动并发执行各类清理，返回清理前后的统计及各分类数量"""
        logger.info("开始手动清理令牌...")
        before = self._safe_stats()

        futures = {
            job_id: self._executors[job_id].submit(self._call_in_context, func)
            for job_id, func in self._categories.items()
        }
        result = {}
        errors = {}
        # 各分类并发执行，共用同一个截止时间
        deadline = time.monotonic() + self.job_timeout
        for job_id, future in futures.items():
            key = CATEGORY_KEYS[job_id]
            try:
                result[key] = future.result(timeout=max(0, deadline - time.monotonic()))
            except FutureTimeoutError:
                future.cancel()
                result[key] = 0
                errors[key] = 'timeout'
                logger.error(f"手动清理 {job_id} 执行超时")
            except Exception as e:
                result[key] = 0
                errors[key] = str(e)
                logger.error(f"手动清理 {job_id} 失败: {str(e)}", exc_info=True)

        result['total'] = sum(result[key] for key in CATEGORY_KEYS.values())
        result['errors'] = errors
        result['before_stats'] = before
        result['after_stats'] = self._safe_stats()
        logger.info(f"手动清理完成，共清理 {result['total']} 个令牌")
        return result

    def trigger_comprehensive_cleanup(self) -> dict:
        """手动执行每周全面清理"""
        logger.info("开始手动全面清理令牌...")
        before = self._safe_stats()
        try:
            result = self._call('comprehensive_cleanup', self.cleanup_all_tokens)
        except FutureTimeoutError:
            logger.error(f"全面清理执行超时（{self.job_timeout} 秒）")
            result = {key: 0 for key in CATEGORY_KEYS.values()}
            result.update(total=0, failed=list(CATEGORY_KEYS))
        result['before_stats'] = before
        result['after_stats'] = self._safe_stats()
        return result

    def get_stats(self) -> Optional[dict]:
        """获取当前令牌统计"""
        return self._safe_stats()

    def get_status(self) -> dict:
        """获取调度器状态"""
        jobs = []
        if self.handle is not None:
            for job_id in self.handle.jobs:
                job = self.scheduler.get_job(job_id)
                if job is None:
                    continue
                next_run = job.next_run_time
                jobs.append({
                    'id': job_id,
                    'name': job.name,
                    'paused': next_run is None,
                    'next_run_time': next_run.isoformat() if next_run else None,
                })
        return {
            'state': self.state,
            'initialized': self.handle is not None,
            'active_jobs': sum(1 for job in jobs if not job['paused']),
            'jobs': jobs,
        }

    def _call_in_context(self, func):
        with self.app.app_context():
            return func()

    def _call(self, key, func):
        """在独立线程和应用上下文中执行，超过 job_timeout 抛出超时异常"""
        future = self._executors[key].submit(self._call_in_context, func)
        try:
            return future.result(timeout=self.job_timeout)
        except FutureTimeoutError:
            # 还在排队的调用直接取消，不在执行器中堆积
            future.cancel()
            raise

    def _safe_stats(self):
        try:
            return self._call(STATS_EXECUTOR, self.store.stats)
        except Exception as e:
            logger.error(f"获取令牌统计失败: {str(e)}")
            return None


# 全局调度器实例
_scheduler = None

def init_scheduler(app: Flask) -> TokenCleanupScheduler:
    """初始化调度器"""
    global _scheduler
    if _scheduler is None:
        _scheduler = TokenCleanupScheduler(app)
        if app.config.get('SCHEDULER_ENABLED', True):
            _scheduler.start()
    return _scheduler

def get_scheduler() -> TokenCleanupScheduler:
    """获取调度器实例"""
    if _scheduler is None:
        raise RuntimeError("Scheduler has not been initialized.")
    return _scheduler

def shutdown_scheduler():
    """关闭调度器"""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None
