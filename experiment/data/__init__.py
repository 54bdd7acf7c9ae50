from .processes import *
from .sampler import *
