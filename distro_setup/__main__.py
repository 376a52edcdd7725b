from distro_setup.provision import main

if __name__ == "__main__":
    main()
