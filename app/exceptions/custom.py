class WebhookAuthError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedEventError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MeetingNotFoundError(Exception):
    def __init__(self, meeting_id: str):
        self.meeting_id = meeting_id
        self.message = f"Meeting {meeting_id} not found"
        super().__init__(self.message)


class AgentNotFoundError(Exception):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        self.message = f"Agent {agent_id} not found"
        super().__init__(self.message)


class InvalidMeetingPromptError(Exception):
    def __init__(self, meeting_id: str):
        self.meeting_id = meeting_id
        self.message = f"Meeting {meeting_id} prompt is invalid, cannot start AI session"
        super().__init__(self.message)


class StreamError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(Exception):
    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Rate limit exceeded for {service}")


class AnalysisError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
