from .attnnp import *
from .base import *
from .convnp import *
from .noise import *
from .np import *
