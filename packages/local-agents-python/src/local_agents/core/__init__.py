"""核心运行时（错误、执行器、契约、Agent Loop、Runner）。"""
