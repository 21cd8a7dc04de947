"""Logging configuration for the CampusVote service and vote engine."""

import os
import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler


class LogConfig:
    LOG_DIR = 'logs'

    APP_LOG_FILE = 'app.log'
    ERROR_LOG_FILE = 'error.log'
    VOTE_LOG_FILE = 'votes.log'
    SECURITY_LOG_FILE = 'security.log'

    LOG_LEVELS = {
        'development': logging.DEBUG,
        'testing': logging.INFO,
        'production': logging.INFO,
    }

    MAX_BYTES = 10 * 1024 * 1024
    BACKUP_COUNT = 10

    DETAILED_FORMAT = (
        '%(asctime)s - %(name)s - %(levelname)s - '
        '[%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s'
    )
    SIMPLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
    VOTE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

    @classmethod
    def get_log_level(cls, env='development'):
        return cls.LOG_LEVELS.get(env, logging.INFO)


def setup_logging(app):
    env = app.config.get('ENV', 'development')
    log_level = LogConfig.get_log_level(env)

    app.logger.handlers.clear()
    app.logger.setLevel(log_level)

    if env == 'development':
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(LogConfig.SIMPLE_FORMAT))
        app.logger.addHandler(console_handler)

    # Test runs keep everything in memory
    if not app.config.get('LOG_TO_FILES', True):
        return

    log_dir = os.path.join(app.root_path, '..', LogConfig.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    app_log_path = os.path.join(log_dir, LogConfig.APP_LOG_FILE)
    app_handler = RotatingFileHandler(
        app_log_path,
        maxBytes=LogConfig.MAX_BYTES,
        backupCount=LogConfig.BACKUP_COUNT
    )
    app_handler.setLevel(log_level)
    app_handler.setFormatter(logging.Formatter(LogConfig.DETAILED_FORMAT))
    app.logger.addHandler(app_handler)

    # Engine modules log under the package logger
    package_logger = logging.getLogger('campusvote')
    package_logger.setLevel(log_level)
    package_logger.handlers.clear()
    package_logger.addHandler(app_handler)

    error_log_path = os.path.join(log_dir, LogConfig.ERROR_LOG_FILE)
    error_handler = RotatingFileHandler(
        error_log_path,
        maxBytes=LogConfig.MAX_BYTES,
        backupCount=LogConfig.BACKUP_COUNT
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(LogConfig.DETAILED_FORMAT))
    app.logger.addHandler(error_handler)
    package_logger.addHandler(error_handler)

    vote_log_path = os.path.join(log_dir, LogConfig.VOTE_LOG_FILE)
    vote_handler = TimedRotatingFileHandler(
        vote_log_path,
        when='midnight',
        interval=1,
        backupCount=365
    )
    vote_handler.setLevel(logging.INFO)
    vote_handler.setFormatter(logging.Formatter(LogConfig.VOTE_FORMAT))

    vote_logger = logging.getLogger('votes')
    vote_logger.setLevel(logging.INFO)
    vote_logger.handlers.clear()
    vote_logger.addHandler(vote_handler)
    vote_logger.propagate = False

    security_log_path = os.path.join(log_dir, LogConfig.SECURITY_LOG_FILE)
    security_handler = TimedRotatingFileHandler(
        security_log_path,
        when='midnight',
        interval=1,
        backupCount=365
    )
    security_handler.setLevel(logging.WARNING)
    security_handler.setFormatter(logging.Formatter(LogConfig.DETAILED_FORMAT))

    security_logger = logging.getLogger('security')
    security_logger.setLevel(logging.WARNING)
    security_logger.handlers.clear()
    security_logger.addHandler(security_handler)
    security_logger.propagate = False

    app.logger.info('=' * 80)
    app.logger.info('CampusVote Service Starting')
    app.logger.info(f'Environment: {env}')
    app.logger.info(f'Log Level: {logging.getLevelName(log_level)}')
    app.logger.info(f'Log Directory: {log_dir}')
    app.logger.info('=' * 80)


def get_vote_logger():
    return logging.getLogger('votes')


def get_security_logger():
    return logging.getLogger('security')


def log_vote_event(event_type, voter_id=None, election_id=None, description='', **kwargs):
    """Append one line to the vote audit log. Never records the voter's choice."""
    logger = get_vote_logger()

    metadata = ' | '.join([f'{k}={v}' for k, v in kwargs.items()])
    log_message = f"EVENT:{event_type} | VOTER:{voter_id} | ELECTION:{election_id}"
    if description:
        log_message += f" | DESC:{description}"
    if metadata:
        log_message += f" | {metadata}"

    logger.info(log_message)


def log_security_event(event_type, user_id=None, ip_address=None, description='', severity='WARNING'):
    logger = get_security_logger()

    log_message = f"EVENT:{event_type}"
    if user_id:
        log_message += f" | USER:{user_id}"
    if ip_address:
        log_message += f" | IP:{ip_address}"
    if description:
        log_message += f" | DESC:{description}"

    log_func = getattr(logger, severity.lower(), logger.warning)
    log_func(log_message)
