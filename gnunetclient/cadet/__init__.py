"""CADET service client.

- CadetMux: one connection to the daemon carrying many channels
- Channel: an open stream to a port on a remote peer
- Port: accepts channels other peers open towards us
"""

from gnunetclient.cadet.channel import Channel, ChannelState
from gnunetclient.cadet.mux import CadetMux, allocate_channel_id
from gnunetclient.cadet.port import Port
from gnunetclient.cadet.protocol import Ack, Destroy, Payload

__all__ = [
    "Ack",
    "CadetMux",
    "Channel",
    "ChannelState",
    "Destroy",
    "Payload",
    "Port",
    "allocate_channel_id",
]
