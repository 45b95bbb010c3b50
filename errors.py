class WallError(Exception):
    """Base for recoverable message wall errors."""

    status_code = 400


class UnknownSection(WallError):
    status_code = 404

    def __init__(self, section):
        super().__init__("Section not found")
        self.section = section


class NotFound(WallError):
    status_code = 404

    def __init__(self, section, message_id):
        super().__init__("Message not found")
        self.section = section
        self.message_id = message_id


class InvalidInput(WallError):
    status_code = 400
