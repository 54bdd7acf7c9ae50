from .helpers import *
from .visualize_1d import *
