class PipelineError(Exception):
    pass


class TopicNotFound(PipelineError):
    def __init__(self, topic: object) -> None:
        super().__init__(f"topic not found: {topic}")
        self.topic = topic


class TopicArticleNotFound(PipelineError):
    def __init__(self, topic_article_id: object) -> None:
        super().__init__(f"topic article not found: {topic_article_id}")
        self.topic_article_id = topic_article_id


class PendingDuplicateNotFound(PipelineError):
    def __init__(self, pending_id: object) -> None:
        super().__init__(f"pending duplicate not found: {pending_id}")
        self.pending_id = pending_id


class InvalidStatusTransition(PipelineError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move topic article from {current} to {target}")
        self.current = current
        self.target = target


class InvalidPipelineSettings(PipelineError, ValueError):
    pass
