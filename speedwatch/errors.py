"""Exception types raised by the enforcement core."""


class SpeedWatchError(Exception):
    """Base class for errors raised by speedwatch."""


class UnknownCheckpointError(SpeedWatchError):
    """A topology edit named a checkpoint that is not registered."""

    def __init__(self, checkpoint_id):
        super().__init__(f'Unknown checkpoint: {checkpoint_id}')
        self.checkpoint_id = checkpoint_id


class PlacementLockedError(SpeedWatchError):
    """A locked checkpoint was asked to move."""


class DistanceQueryTimeout(SpeedWatchError):
    """No distance driver answered a distance query within the bounded wait."""

    def __init__(self, request_id, timeout):
        super().__init__(f'Distance query {request_id} timed out after {timeout}s')
        self.request_id = request_id
        self.timeout = timeout
