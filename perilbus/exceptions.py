class PerilBusException(Exception):
    pass


class EncodeError(PerilBusException):
    """The codec could not express the value as a payload."""


class DecodeError(PerilBusException):
    """The payload does not conform to the codec's schema."""


class TopologyError(PerilBusException):
    """The broker rejected a queue declaration or binding."""


class PublishError(PerilBusException):
    """The value could not be encoded or transmitted."""


class BrokerConnectionError(PerilBusException):
    """A connection or channel to the broker could not be established."""


class PerilBusCLIException(PerilBusException):
    pass


class Retry(Exception):
    pass


class Drop(Exception):
    pass
