from pix.cli import main

main()
