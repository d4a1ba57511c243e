class RelayToolsError(Exception):
    """ Base class for relaytools errors """
    pass

# STARTUP EXCEPTIONS

class StartupConfigError(RelayToolsError):
    """ This exception is raised when the configuration is invalid. Fatal before serving """
    def __init__(self, option, reason):
        self.option = option
        super().__init__(f"Invalid configuration for {option}: {reason}")

# GATEWAY EXCEPTIONS

class NotStartedError(RelayToolsError):
    """ This exception is raised when a gateway operation is invoked before start() completes """
    def __init__(self, operation):
        super().__init__(f"Relay node is not started, cannot {operation}")

class DecodeError(RelayToolsError):
    """ This exception is raised when an inbound envelope cannot be decoded """
    def __init__(self, reason):
        super().__init__(f"Could not decode envelope: {reason}")

# COLLABORATOR EXCEPTIONS

class TransientFetchError(RelayToolsError):
    """ This exception is raised when an attestation fetch or chain query fails """
    def __init__(self, source, reason):
        self.source = source
        super().__init__(f"Failed to fetch {source}: {reason}")

class PersistenceError(RelayToolsError):
    """ This exception is raised when the ledger cannot be read from or written to storage """
    def __init__(self, key, reason):
        self.key = key
        super().__init__(f"Storage operation failed for {key}: {reason}")

# PROBE EXCEPTIONS

class ProbeAlreadyPendingError(RelayToolsError):
    """ This exception is raised when a probe is started for an address that already has one pending """
    def __init__(self, address):
        self.address = address
        super().__init__(f"A relay probe is already pending for {address}")
