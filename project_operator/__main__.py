from project_operator.server import main

main()
