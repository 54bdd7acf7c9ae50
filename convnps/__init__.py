from .losses import *
from .neuralproc import *
from .utils.predict import *
