# Importing the package registers every table on Base.metadata
from .user import User
from .vehicle import Vehicle, VehicleStatus
from .block import Block, BlockStatus
