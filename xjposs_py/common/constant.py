OneK = 1024
OneM = OneK * OneK
