name = "stackswap"
