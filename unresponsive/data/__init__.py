from .InputBuffer import InputBuffer
