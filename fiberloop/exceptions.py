"""Domain errors raised by the FiberLoop services"""


class FiberLoopError(Exception):
    """Base class for every error raised by the services layer"""


class SynthesisError(FiberLoopError):
    """Input cannot produce a loop (too few points, unknown anchor...)"""


class InvalidGeometryError(FiberLoopError):
    """Submitted geometry fails segment validation"""


class NetworkNotFoundError(FiberLoopError):
    """No network with the given id"""

    def __init__(self, network_id: int):
        super().__init__(f"Network with id {network_id} not found")
        self.network_id = network_id


class SegmentNotFoundError(FiberLoopError):
    """No connection matches the given segment reference"""


class PersistenceError(FiberLoopError):
    """A database statement failed and the transaction was rolled back"""


class FeatureNotFoundError(FiberLoopError):
    """No point or connection with the given id in the network"""
