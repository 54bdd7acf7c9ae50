from .attention import *
from .cnn import *
from .encoders import *
from .mlp import *
from .pooling import *
from .setcnn import *
